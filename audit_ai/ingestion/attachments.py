"""附件（收据图片 / 表格）校验与提交。

- 图片：image/* 类型，大小不超过 max_image_bytes；本地 base64 编码为 data URL，
  提交到 /ai/analyze-image，返回 AttachmentResult。
- 表格：扩展名在 spreadsheet_extensions 中；以 multipart 提交到
  /documents/analyze，返回 DocumentImportSummary。

校验失败直接抛出 ValidationError，不会发起网络请求。
"""

import base64
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional, Union

from audit_ai.config.settings import settings
from audit_ai.domain.exceptions import ApiError, ValidationError
from audit_ai.domain.models import AttachmentResult, DocumentImportSummary
from audit_ai.infrastructure.logging.logger import logger
from audit_ai.transport.endpoints import get_endpoint
from audit_ai.transport.http_client import ApiClient


AttachmentKind = Literal["image", "spreadsheet"]


@dataclass
class Upload:
    """用户选择的文件。"""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def suffix(self) -> str:
        return Path(self.filename).suffix.lower()

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "Upload":
        p = Path(path).expanduser()
        guessed, _ = mimetypes.guess_type(p.name)
        return cls(filename=p.name, content=p.read_bytes(), content_type=guessed or "application/octet-stream")


class AttachmentIngestor:
    def __init__(self, api: ApiClient, cfg=settings):
        self._api = api
        self._settings = cfg

    # ---- 校验 ----

    def classify(self, upload: Upload) -> AttachmentKind:
        if (upload.content_type or "").lower().startswith("image/"):
            return "image"
        allowed = [e.lower() for e in self._settings.spreadsheet_extensions]
        if upload.suffix in allowed:
            return "spreadsheet"
        raise ValidationError(
            code="UNSUPPORTED_FILE",
            message=f"Unsupported file type: {upload.filename}. Upload an image or {', '.join(allowed)} file.",
            filename=upload.filename,
        )

    def validate(self, upload: Upload) -> AttachmentKind:
        kind = self.classify(upload)
        if kind == "image" and upload.size > self._settings.max_image_bytes:
            limit_mib = self._settings.max_image_bytes / (1024 * 1024)
            raise ValidationError(
                code="FILE_TOO_LARGE",
                message=f"Image exceeds the {limit_mib:g} MiB limit",
                filename=upload.filename,
                size=upload.size,
            )
        return kind

    # ---- 图片 ----

    def encode_image(self, upload: Upload) -> str:
        self.validate(upload)
        encoded = base64.b64encode(upload.content).decode("ascii")
        return f"data:{upload.content_type};base64,{encoded}"

    def analyze_image(self, image_data_url: str, user_id: str) -> AttachmentResult:
        data = self._api.post(
            get_endpoint("analyze_image").path,
            {"image": image_data_url, "userId": user_id},
        )
        if not data.get("success"):
            raise ApiError(
                code="ANALYSIS_FAILED",
                message=str(data.get("error") or "Image analysis failed"),
            )
        return AttachmentResult.from_payload(data.get("data") or {})

    # ---- 表格 ----

    def import_spreadsheet(self, upload: Upload) -> DocumentImportSummary:
        if self.validate(upload) != "spreadsheet":
            raise ValidationError(code="UNSUPPORTED_FILE", message=f"{upload.filename} is not a spreadsheet")
        data = self._api.post(
            get_endpoint("analyze_document").path,
            files={"file": (upload.filename, upload.content, upload.content_type)},
        )
        if not data.get("success"):
            raise ApiError(
                code="DOCUMENT_ANALYSIS_FAILED",
                message=str(data.get("error") or "Failed to analyze document"),
            )
        summary = DocumentImportSummary.from_payload(data.get("data") or {}, fallback_name=upload.filename)
        logger.info(
            "Imported spreadsheet",
            extra={"extra": {
                "filename": summary.filename,
                "imported": summary.imported_count,
                "skipped": summary.skipped_count,
            }},
        )
        return summary

    def submit_attachment(
        self, upload: Upload, user_id: Optional[str]
    ) -> Union[AttachmentResult, DocumentImportSummary]:
        """校验并按类型提交附件。"""

        kind = self.validate(upload)
        if kind == "image":
            if not user_id:
                raise ValidationError(code="MISSING_USER", message="userId is required")
            return self.analyze_image(self.encode_image(upload), user_id)
        return self.import_spreadsheet(upload)
