"""
conftest.py - Shared pytest fixtures.
"""

from __future__ import annotations

import os
import sys

import pytest

# Ensure local imports resolve from project root.
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from models import ReceiptItem


@pytest.fixture
def groceries() -> list[ReceiptItem]:
    return [
        ReceiptItem(name="Oat milk", quantity=2, price=4.99, category="Groceries"),
        ReceiptItem(name="Batteries", quantity=1, price=9.50, category="Electronics"),
    ]
