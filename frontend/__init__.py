"""
Frontend for the face verification client: backend API client and screens.
"""
