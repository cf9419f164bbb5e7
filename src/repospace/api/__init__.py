"""
HTTP API for the local repository archive.
"""
