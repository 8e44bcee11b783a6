"""Telephony provider callbacks."""
