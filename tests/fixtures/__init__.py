"""Test fixture package for dealbridge.

Contains fixtures for:
- Fake IPFS gateway, Lotus node and deal client
- The application wired to those fakes
"""
