"""
Loyalty Survey Analysis Package
===============================
Modules:
    config          – Configuration loading + survey constants
    data_loading    – CSV loading, validated parsing, codebook tables
    preprocessing   – Recode tables, cleaning, missing-data handling
    transactions    – One-hot transaction encoding
    rules           – Association-rule mining + interestingness measures
    network         – Strong-rule filter + association network
    eda             – Chi-squared and Kruskal-Wallis tests
    latent          – Measurement + structural path model
    latent_class    – Latent class analysis
    modeling        – Random forest classification
    evaluation      – Classification metrics
"""

from loyalty import config
from loyalty import data_loading
from loyalty import preprocessing
from loyalty import transactions
from loyalty import rules
from loyalty import network
from loyalty import eda
from loyalty import evaluation
from loyalty import modeling
