"""Sync engine managers and the adapters they run on"""
