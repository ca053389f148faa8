"""领域层模型与协议。

包含：
- models: Message / FinancialContextSnapshot / AttachmentResult 等数据模型。
- conversation: 有序消息列表、StreamSession 与回合状态。
- exceptions: 业务异常类型定义。
"""
