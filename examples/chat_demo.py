"""Minimal demonstration of the streaming chat client."""

from audit_ai import build_chat_service

if __name__ == "__main__":
    service = build_chat_service()
    service.mount()
    try:
        question = "Analyze current cash flow"
        service.send_message(question)
        print("User:", question)
        print("Assistant:", service.messages[-1].text)
    finally:
        service.unmount()
