# Copyright (c) 2025 sprowii
"""Защита персональных данных.

Модуль обеспечивает:
- Псевдонимизацию user_id в логах приложения (HMAC с солью)
- Шифрование таблицы никнеймов в Redis

При утечке логов или дампа Redis злоумышленник получит только
хэшированные ID и зашифрованные никнеймы.
"""
import base64
import hashlib
import hmac
import os
import re
import secrets
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from vkmod.logging_config import log

ENCRYPTED_PREFIX = "enc:"


# ============================================================================
# КОНФИГУРАЦИЯ
# ============================================================================

# Если соль не задана, генерируется при запуске (псевдонимы изменятся после рестарта)
_HASH_SALT = os.getenv("DATA_HASH_SALT")
if not _HASH_SALT:
    log.warning(
        "DATA_HASH_SALT не задан! Генерирую временную соль. "
        "Задайте DATA_HASH_SALT в переменных окружения для production."
    )
    _HASH_SALT = secrets.token_hex(32)

_ENCRYPTION_KEY = os.getenv("DATA_ENCRYPTION_KEY")
_fernet: Optional[Fernet] = None


def _build_fernet(raw_key: str) -> Fernet:
    try:
        # Ключ уже в формате Fernet
        return Fernet(raw_key.encode())
    except ValueError:
        # Обычный пароль - деривируем ключ
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_HASH_SALT.encode()[:16],
            iterations=100000,
        )
        return Fernet(base64.urlsafe_b64encode(kdf.derive(raw_key.encode())))


if _ENCRYPTION_KEY:
    _fernet = _build_fernet(_ENCRYPTION_KEY)
else:
    log.warning(
        "DATA_ENCRYPTION_KEY не задан! Никнеймы хранятся без шифрования."
    )


# ============================================================================
# ПСЕВДОНИМИЗАЦИЯ
# ============================================================================

def pseudonymize_id(user_id: Optional[int], context: str = "default") -> str:
    """Псевдоним user_id для логов в формате ``u_<hash[:16]>``.

    Один и тот же ID в одном контексте всегда даёт один и тот же псевдоним.
    """
    message = f"{context}:{user_id}".encode()
    h = hmac.new(_HASH_SALT.encode(), message, hashlib.sha256)
    return f"u_{h.hexdigest()[:16]}"


def pseudonymize_chat_id(chat_id: int) -> str:
    """Псевдонимизирует peer_id беседы."""
    return pseudonymize_id(chat_id, context="chat")


# ============================================================================
# ШИФРОВАНИЕ
# ============================================================================

def encrypt_data(data: str) -> Optional[str]:
    """Шифрует строку. Возвращает None если шифрование отключено."""
    if not _fernet:
        return None
    return _fernet.encrypt(data.encode()).decode()


def decrypt_data(encrypted: str) -> Optional[str]:
    """Расшифровывает строку. Возвращает None при ошибке или без ключа."""
    if not _fernet:
        return None
    try:
        return _fernet.decrypt(encrypted.encode()).decode()
    except InvalidToken as exc:
        log.error(f"Ошибка расшифровки: {exc!r}")
        return None


def encrypt_payload(payload: str) -> str:
    """Шифрует JSON-документ таблицы, если задан ключ.

    Без ключа возвращает исходную строку.
    """
    encrypted = encrypt_data(payload)
    if encrypted:
        return f"{ENCRYPTED_PREFIX}{encrypted}"
    return payload


def decrypt_payload(stored: Optional[str]) -> Optional[str]:
    """Обратная операция к ``encrypt_payload``.

    Незашифрованные данные возвращаются как есть.
    """
    if not stored or not stored.startswith(ENCRYPTED_PREFIX):
        return stored

    if not _fernet:
        log.warning("Попытка расшифровать данные без ключа шифрования")
        return None

    return decrypt_data(stored[len(ENCRYPTED_PREFIX):])


# ============================================================================
# БЕЗОПАСНОЕ ЛОГИРОВАНИЕ
# ============================================================================

def safe_log_action(
    action_type: str,
    target_user_id: int,
    chat_id: int,
    admin_id: Optional[int] = None,
    reason: Optional[str] = None
) -> str:
    """Формирует безопасную строку для лога действия модерации."""
    target = pseudonymize_id(target_user_id)
    chat = pseudonymize_chat_id(chat_id)
    admin = pseudonymize_id(admin_id) if admin_id else "auto"

    safe_reason = ""
    if reason:
        # Убираем упоминания вида [id123|Имя]
        safe_reason = re.sub(r"\[id\d+\|[^\]]*\]", "[id***]", reason)[:50]

    return f"[{action_type}] target={target} chat={chat} by={admin} reason={safe_reason}"


def generate_encryption_key() -> str:
    """Генерирует новый ключ шифрования Fernet.

    python -c "from vkmod.security.data_protection import generate_encryption_key; print(generate_encryption_key())"
    """
    return Fernet.generate_key().decode()


def check_security_config() -> Dict[str, Any]:
    """Статус настроек безопасности для вывода при старте."""
    return {
        "hash_salt_configured": bool(os.getenv("DATA_HASH_SALT")),
        "encryption_enabled": _fernet is not None,
    }
