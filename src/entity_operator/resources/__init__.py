"""
Resources package - derivation of the desired Kubernetes objects.
"""
