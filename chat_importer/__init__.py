#!/usr/bin/env python3
"""
Chat import executor: delivers a transfer plan to a messaging channel
"""

__version__ = "0.1.0"

from chat_importer.core.config import load_config
from chat_importer.core.context import RunContext
from chat_importer.core.executor import DeliveryExecutor
from chat_importer.core.job import TransferJob
from chat_importer.core.ledger import LedgerEntry, ProgressLedger, ProgressSummary
from chat_importer.core.pacing import PacingController
from chat_importer.core.plan import TransferPlan, load_plan
