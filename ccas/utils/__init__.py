"""
Utility modules for the Construction Cost Allocation System.
"""
