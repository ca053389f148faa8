"""Audit AI 客户端顶层包。

该包提供 AI 会计助手聊天页面的核心实现，
包括配置加载、领域模型、HTTP 与流式传输、会话状态机、
附件导入、语音适配与主动财务监控等能力。
"""

from audit_ai.api.service import ChatService, build_chat_service

__all__ = ["ChatService", "build_chat_service"]
