"""
In-memory PDF object model and document revisions, as consumed by the
document revision analysis in :mod:`pdftrust.sign.diff_analysis`.
"""
