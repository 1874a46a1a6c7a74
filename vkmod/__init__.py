# Copyright (c) 2025 sprowii
__version__ = "0.1.0"
