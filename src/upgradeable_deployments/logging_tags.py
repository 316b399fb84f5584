"""
Subsystem tags prefixed to log lines so output stays searchable.
"""

PUSH = "[PUSH]"
PROXY = "[PROXY]"
PUBLISH = "[PUBLISH]"
DEPENDENCY = "[DEPENDENCY]"
LEDGER = "[LEDGER]"
RPC = "[RPC]"
STORAGE = "[STORAGE]"
