from sqlalchemy import Column, String, Integer, BigInteger, Float, DateTime, Boolean, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

__all__ = ["Base", "Column", "String", "Integer", "BigInteger", "Float", "DateTime", "Boolean", "Text"]
