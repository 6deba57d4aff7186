"""
Secure Pipeline Configuration Package
"""
