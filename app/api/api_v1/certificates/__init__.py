"""
Certificates API Package
"""
