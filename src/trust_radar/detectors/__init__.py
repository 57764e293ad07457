from trust_radar.detectors.base import Detection
from trust_radar.detectors.runner import DetectorRunner
