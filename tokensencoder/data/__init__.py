"""
tokensencoder.data — Sentences and Linguistic Collaborators
"""

from tokensencoder.data.dictionary import FeaturesDictionary, FrequencyDictionary
from tokensencoder.data.features import (
    MorphologyFeaturesExtractor,
    NormWordKeyExtractor,
    WordKeyExtractor,
    get_key_extractor,
)
from tokensencoder.data.sentence import FormToken, MorphoToken, Sentence
