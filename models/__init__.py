# models module
"""
Package models: contrats pydantic de l'API FabQuote
"""
