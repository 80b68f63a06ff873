"""
Services for the build-and-deploy control plane.
"""
