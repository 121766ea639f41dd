"""
voiceledger - Credit ledger and referral rewards for the voice transcription assistant.
"""

__version__ = "0.1.0"
