# image_classifier.py
import io
import logging
import os

import numpy as np
import requests
from PIL import Image, UnidentifiedImageError

import config

logger = logging.getLogger(__name__)

# Output order of the 4-class softmax model
IMAGE_CLASSES = ('Water Clogging', 'Road Damage', 'Garbage', 'Streetlight')
FALLBACK_NOTE = 'Using fallback classification'


def fallback_result():
    """Constant answer used whenever the model can't be run"""
    return {
        'category': 'Other',
        'confidence': 0.5,
        'all_predictions': [],
        'used_fallback': True,
        'note': FALLBACK_NOTE,
    }


class ImageClassifier:
    def __init__(self, model_paths=None, image_size=None, download_timeout=None):
        self.model_paths = list(model_paths) if model_paths is not None else list(config.MODEL_PATHS)
        self.image_size = image_size or config.IMAGE_SIZE
        self.download_timeout = download_timeout or config.IMAGE_DOWNLOAD_TIMEOUT
        self.model = None
        self.model_path = None
        self._load_attempted = False

    def _load_model(self):
        """Load the Keras model from the first known location that exists (once)"""
        if self._load_attempted:
            return self.model
        self._load_attempted = True

        existing = [path for path in self.model_paths if os.path.exists(path)]
        if not existing:
            logger.warning("⚠️ Model file not found at any of %s, using fallback classification", self.model_paths)
            return None

        try:
            from tensorflow.keras.models import load_model
        except ImportError as e:
            logger.warning("⚠️ TensorFlow is not installed (%s), using fallback classification", e)
            return None

        for path in existing:
            try:
                self.model = load_model(path)
                self.model_path = path
                logger.info("✅ Image model loaded from %s", path)
                return self.model
            except Exception as e:
                logger.warning("⚠️ Could not load model from %s: %s", path, e)

        return None

    def reload(self):
        self.model = None
        self.model_path = None
        self._load_attempted = False
        return self._load_model()

    def _open_image(self, image):
        if isinstance(image, Image.Image):
            return image
        if isinstance(image, (bytes, bytearray)):
            return Image.open(io.BytesIO(image))
        if hasattr(image, 'read'):
            return Image.open(io.BytesIO(image.read()))
        return Image.open(image)

    def preprocess(self, image):
        """Resize to the model input and scale pixels to [0, 1], batch of one"""
        img = self._open_image(image).convert('RGB')
        img = img.resize((self.image_size, self.image_size), Image.Resampling.NEAREST)
        array = np.asarray(img, dtype=np.float32) / 255.0
        return np.expand_dims(array, axis=0)

    def classify_image(self, image):
        """Classify an uploaded photo; never raises, falls back to 'Other'"""
        if image is None:
            return fallback_result()

        model = self._load_model()
        if model is None:
            return fallback_result()

        try:
            batch = self.preprocess(image)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.warning("❌ Could not decode image: %s", e)
            return fallback_result()

        try:
            prediction = model.predict(batch, verbose=0)
        except Exception as e:
            logger.error("❌ Image classification error: %s", e)
            return fallback_result()

        probabilities = np.asarray(prediction, dtype=np.float64).ravel()
        if probabilities.size == 0:
            return fallback_result()

        best = int(np.argmax(probabilities))
        category = IMAGE_CLASSES[best] if best < len(IMAGE_CLASSES) else 'Other'

        return {
            'category': category,
            'confidence': round(float(probabilities[best]), 2),
            'all_predictions': [
                {
                    'class': IMAGE_CLASSES[idx] if idx < len(IMAGE_CLASSES) else 'Other',
                    'probability': round(float(prob), 2),
                }
                for idx, prob in enumerate(probabilities)
            ],
            'used_fallback': False,
        }

    def classify_image_url(self, image_url):
        """Download an image (e.g. an MMS attachment) and classify it"""
        try:
            response = requests.get(image_url, timeout=self.download_timeout)
        except requests.RequestException as e:
            logger.warning("❌ Could not download image %s: %s", image_url, e)
            return fallback_result()

        if response.status_code != 200:
            logger.warning("❌ Could not download image %s: HTTP %s", image_url, response.status_code)
            return fallback_result()

        return self.classify_image(response.content)


# Global instance
image_classifier = ImageClassifier()
