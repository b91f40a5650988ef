"""Remote session providers"""
