"""
Public Bible Quotations
=======================

Classifies candidate verse/page pairs from OCR-scanned historical newspapers
(Chronicling America) as genuine scriptural quotations or spurious matches.

An upstream matcher scores every candidate pair with a handful of features
(matching n-gram counts, tf-idf weight, positional spread, and a runs-test
p-value). This package cleans those features, checks their correlations,
tunes several off-the-shelf classifiers under a shared resampling regime,
combines the best of them into a weighted ensemble, and audits the
batch-converted newspaper corpus that the candidate pairs were drawn from.
"""

__version__ = "0.1.0"
