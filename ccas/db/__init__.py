"""
Database package for the Construction Cost Allocation System.
"""
