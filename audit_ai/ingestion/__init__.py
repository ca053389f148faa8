from .attachments import AttachmentIngestor, Upload

__all__ = ["AttachmentIngestor", "Upload"]
