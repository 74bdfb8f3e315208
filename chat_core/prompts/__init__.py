"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取 system prompt 模板，
填入当前 UTC 时间后用于构造 ChatMessage(role="system")。
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


PROMPTS_DIR = Path(__file__).resolve().parent


def load_system_prompt(locale: str = "en", now: Optional[datetime] = None) -> str:
    """加载助手的系统提示词文本。"""

    fname = PROMPTS_DIR / locale / "assistant_system.md"
    now = now or datetime.now(timezone.utc)
    template = fname.read_text(encoding="utf-8").strip()
    return template.format(now=now.isoformat().replace("+00:00", "Z"))
