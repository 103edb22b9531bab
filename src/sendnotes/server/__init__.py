"""
Reference implementation of the remote item store the sync engine talks to.

Run locally with:
    uvicorn sendnotes.server.main:app --reload
"""
