"""Rewrite a third-party RSS feed into a validator-compliant static feed."""
