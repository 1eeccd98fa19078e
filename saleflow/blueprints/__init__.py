"""
SaleFlow — Transaction Step Workflow Engine
Blueprint registry.
"""
