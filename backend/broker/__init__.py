"""Tenant credential broker and provisioning queue service."""
