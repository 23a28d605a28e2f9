"""CCPI web API"""
