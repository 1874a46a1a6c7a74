# Copyright (c) 2025 sprowii
from datetime import datetime
from typing import List, Optional

# Лимит длины сообщения VK
MAX_MESSAGE_LENGTH = 4096


def format_duration(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds} сек."
    if seconds < 3600:
        return f"{seconds // 60} мин."
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    return f"{hours} ч. {minutes} мин."


def format_timestamp(ts: Optional[float], default: str = "Неизвестно") -> str:
    if not ts:
        return default
    return datetime.fromtimestamp(ts).strftime("%d.%m.%Y %H:%M")


def split_long_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> List[str]:
    if len(text) <= max_length:
        return [text]
    parts, current = [], ""
    for line in text.split("\n"):
        while len(line) > max_length:
            if current:
                parts.append(current.strip())
                current = ""
            parts.append(line[:max_length])
            line = line[max_length:]
        if len(current) + len(line) + 1 <= max_length:
            current += line + "\n"
        else:
            if current:
                parts.append(current.strip())
            current = line + "\n"
    if current.strip():
        parts.append(current.strip())
    return parts
