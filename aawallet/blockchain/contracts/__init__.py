# MIT License
# Copyright (c) 2025 Hashborn

from .base import Contract, external, contract_class
from .simple_account import SimpleAccount
from .entry_point import EntryPoint, FailedOp

__all__ = ['Contract', 'external', 'contract_class', 'SimpleAccount', 'EntryPoint', 'FailedOp']
