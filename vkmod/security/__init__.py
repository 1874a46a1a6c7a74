# Copyright (c) 2025 sprowii
"""Security-related helpers.

Модули:
- data_protection: Шифрование и псевдонимизация данных
"""
from vkmod.security.data_protection import (
    check_security_config,
    decrypt_data,
    decrypt_payload,
    encrypt_data,
    encrypt_payload,
    generate_encryption_key,
    pseudonymize_chat_id,
    pseudonymize_id,
    safe_log_action,
)

__all__ = [
    "check_security_config",
    "decrypt_data",
    "decrypt_payload",
    "encrypt_data",
    "encrypt_payload",
    "generate_encryption_key",
    "pseudonymize_chat_id",
    "pseudonymize_id",
    "safe_log_action",
]
