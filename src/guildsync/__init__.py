"""
Guild sync package: reads a Discord guild's member roster through the bot
API and appends members not yet recorded to a Google Sheet.

The sheet is the only store.  Each pass reads the ids already present,
pages through the roster, and appends the difference in one batched write;
nothing is updated or deleted by a sync.
"""
