"""领域层模型与协议。

包含：
- models: LLM 边界使用的 ChatMessage / ChatRequest / ChatResult 模型。
- conversation: 消息记录、会话聚合、裁剪规则及 ConversationStore 抽象。
- title: 会话标题生成。
- exceptions: 业务异常类型定义。
"""
