"""
Encrypted-computation backends and registry event logs.
"""
