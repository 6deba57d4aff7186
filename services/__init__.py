"""
Secure Pipeline Services Package
"""
