"""
Reading session engine for chapterized documents: positions, annotations,
search, progress and copy quota.
"""
