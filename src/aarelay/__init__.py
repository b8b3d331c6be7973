"""
aarelay - Account Abstraction Transaction Relay

An ERC-4337 style entry point: accepts batches of UserOperations, validates
them with their accounts and optional paymasters, executes them, and
reimburses the relayer for gas out of prepaid deposits.

Main Components:
- core.contracts: UserOperation model, deposit ledger, validator, executor,
  settlement and the EntryPoint batch orchestrator
- core.config: Environment-driven relay settings
- core.logging_config: Structured JSON logging
"""

__version__ = "0.1.0"
__author__ = "aarelay Development Team"

__all__ = []
