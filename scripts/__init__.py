"""
Developer tooling for the playground proxy.
"""
