"""GPX track reader.

Turns the track points of a GPX file into ``GeoSample`` objects so a recorded
run can be replayed through the session machine.
"""

from datetime import UTC

import gpxpy

from runledger.geo import GeoSample


def parse_gpx_samples(file_path, default_accuracy_m=5.0):
    """Return every timestamped track point of *file_path* as a GeoSample.

    GPX carries no horizontal accuracy, so every sample gets
    *default_accuracy_m*.  Points without a time are skipped.
    """
    with open(file_path, encoding="utf-8") as gpx_file:
        gpx = gpxpy.parse(gpx_file)

    samples = []
    for track in gpx.tracks:
        for segment in track.segments:
            for point in segment.points:
                if point.time is None:
                    continue
                timestamp = point.time if point.time.tzinfo else point.time.replace(tzinfo=UTC)
                samples.append(
                    GeoSample(
                        latitude=point.latitude,
                        longitude=point.longitude,
                        horizontal_accuracy_m=default_accuracy_m,
                        timestamp=timestamp,
                        instant_speed_mps=point.speed,
                    )
                )
    samples.sort(key=lambda s: s.timestamp)
    return samples
