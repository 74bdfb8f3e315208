"""根据首条用户消息生成会话标题。"""

import re

MAX_TITLE_LENGTH = 50
DEFAULT_TITLE = "New Conversation"

_SENTENCE_END = re.compile(r"[.!?]")


def generate_title(content: str) -> str:
    """生成不超过 50 个字符的标题。

    依次尝试：整段文本、第一句话、按空白截断的前若干个词；
    都不可用时（例如一个超长单词）返回 "New Conversation"。
    """

    text = content.strip()
    if len(text) <= MAX_TITLE_LENGTH:
        return text

    first_sentence = _SENTENCE_END.split(text, maxsplit=1)[0].strip()
    if first_sentence and len(first_sentence) <= MAX_TITLE_LENGTH:
        return first_sentence

    title = ""
    for word in text.split():
        candidate = f"{title} {word}" if title else word
        if len(candidate) > MAX_TITLE_LENGTH:
            break
        title = candidate
    return title or DEFAULT_TITLE
