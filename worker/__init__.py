"""CCPI background worker"""
