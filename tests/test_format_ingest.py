import json
import unittest

from asbuilt.errors import IngestError
from asbuilt.models.point_models import GeographicRecord, ProjectedRecord
from asbuilt.services import format_ingest as fi


class DelimitedTextTests(unittest.TestCase):
    def test_header_aliases_yield_identical_records(self):
        files = [
            "Latitude;Longitude\n48.14;11.58\n48.15;11.59\n",
            "Breite;Länge\n48,14;11,58\n48,15;11,59\n",
            "Y_WGS,X_WGS\n48.14,11.58\n48.15,11.59\n",
            "LNG,lat\n11.58,48.14\n11.59,48.15\n",
            "id\tlon\tLAT\n1\t11.58\t48.14\n2\t11.59\t48.15\n",
        ]
        results = [fi.parse(text.encode("utf-8"), "points.csv").records for text in files]
        for records in results[1:]:
            self.assertEqual(records, results[0])
        self.assertEqual(results[0][0], GeographicRecord(lat=48.14, lng=11.58))

    def test_easting_northing_header_in_any_order(self):
        text = "HW;Punkt;RW\n5333000,12;P1;4468123,45\n"
        records = fi.parse(text.encode("utf-8"), "survey.csv").records
        self.assertEqual(records, [ProjectedRecord(easting=4468123.45, northing=5333000.12)])

    def test_headerless_survey_rows(self):
        text = "1;4468123.45;5333000.12;512.3\nP2;4468130.00;5333010.00;512.1\n"
        result = fi.parse(text.encode("utf-8"), "survey.csv")
        self.assertEqual(len(result.records), 2)
        self.assertEqual(result.records[1], ProjectedRecord(easting=4468130.0, northing=5333010.0))
        self.assertEqual(result.skipped_rows, 0)

    def test_two_column_rows_are_easting_northing(self):
        result = fi.parse(b"691600 5334760\n691700 5334800\n", "points.xyz")
        self.assertEqual(result.records[0], ProjectedRecord(easting=691600.0, northing=5334760.0))

    def test_whitespace_rows_with_decimal_commas(self):
        text = "P1 4468123,45 5333000,12\nP2 4468130,00 5333010,00\n"
        result = fi.parse(text.encode("utf-8"), "survey.xyz")
        self.assertEqual(result.records, [
            ProjectedRecord(easting=4468123.45, northing=5333000.12),
            ProjectedRecord(easting=4468130.0, northing=5333010.0),
        ])
        self.assertIsNone(fi.pick_delimiter(text))
        self.assertEqual(fi.pick_delimiter("lat,lng\n48.14, 11.58\n"), ",")

    def test_rows_without_numeric_pair_are_skipped(self):
        text = "1;4468123.45;5333000.12\n;;\nfoo;bar;baz\n2;4468130.00;5333010.00\n"
        result = fi.parse(text.encode("utf-8"), "survey.csv")
        self.assertEqual(len(result.records), 2)
        self.assertEqual(result.skipped_rows, 1)

    def test_unknown_header_falls_back_to_positions(self):
        text = "Punktnummer;Wert A;Wert B\nP1;4468123.45;5333000.12\n"
        records = fi.parse(text.encode("utf-8"), "survey.csv").records
        self.assertEqual(records, [ProjectedRecord(easting=4468123.45, northing=5333000.12)])

    def test_cp1252_file(self):
        text = "Breite;Länge\n48,14;11,58\n"
        records = fi.parse(text.encode("cp1252"), "points.csv").records
        self.assertEqual(records, [GeographicRecord(lat=48.14, lng=11.58)])

    def test_time_column(self):
        text = "lat,lng,zeit\n48.14,11.58,2024-05-01T10:00:00Z\n"
        record = fi.parse(text.encode("utf-8"), "points.csv").records[0]
        self.assertEqual(record.timestamp, 1714557600000)

    def test_no_usable_rows_is_an_error(self):
        with self.assertRaises(IngestError):
            fi.parse(b"name;comment\nfoo;bar\n", "points.csv")

    def test_truncates_at_cap_and_reports_it(self):
        lines = [f"{i};{4468000 + i}.0;{5333000 + i}.0" for i in range(25_000)]
        result = fi.parse("\n".join(lines).encode("utf-8"), "big.csv")
        self.assertEqual(len(result.records), 20_000)
        self.assertEqual(result.total_found, 25_000)
        self.assertTrue(result.truncated)
        self.assertEqual(result.records[-1].easting, 4468000 + 19_999)

    def test_small_import_is_not_truncated(self):
        result = fi.parse(b"1;4468123.45;5333000.12\n", "survey.csv")
        self.assertFalse(result.truncated)


class GeoJsonTests(unittest.TestCase):
    def test_axis_order_lng_lat_is_swapped(self):
        gj = {
            "type": "FeatureCollection",
            "features": [{"type": "Feature", "geometry": {"type": "Point", "coordinates": [11.58, 48.14]}}],
        }
        records = fi.parse(json.dumps(gj).encode("utf-8"), "points.geojson").records
        self.assertEqual(records, [GeographicRecord(lat=48.14, lng=11.58)])

    def test_linestring_and_ignored_geometries(self):
        gj = {
            "type": "FeatureCollection",
            "features": [
                {"type": "Feature", "geometry": {"type": "LineString", "coordinates": [[11.5, 48.1], [11.6, 48.2, 520.0]]}},
                {"type": "Feature", "geometry": {"type": "Polygon", "coordinates": [[[11.0, 48.0], [11.1, 48.0], [11.0, 48.1], [11.0, 48.0]]]}},
                {"type": "Feature", "geometry": None},
            ],
        }
        records = fi.parse(json.dumps(gj).encode("utf-8"), "track.json").records
        self.assertEqual([(r.lat, r.lng) for r in records], [(48.1, 11.5), (48.2, 11.6)])

    def test_bare_geometry(self):
        records = fi.parse(b'{"type": "Point", "coordinates": [11.58, 48.14]}', "p.geojson").records
        self.assertEqual(records, [GeographicRecord(lat=48.14, lng=11.58)])

    def test_invalid_json(self):
        with self.assertRaises(IngestError):
            fi.parse(b"{not json", "p.geojson")


class TrackFormatTests(unittest.TestCase):
    def test_gpx_track_route_and_waypoints(self):
        gpx = b"""<?xml version="1.0" encoding="UTF-8"?>
<gpx version="1.1" creator="test" xmlns="http://www.topografix.com/GPX/1/1">
  <metadata><name>Baustelle</name></metadata>
  <wpt lat="48.1400" lon="11.5800"><name>Start</name></wpt>
  <rte><rtept lat="48.1410" lon="11.5810"/></rte>
  <trk><trkseg>
    <trkpt lat="48.1420" lon="11.5820"><ele>520</ele><time>2024-05-01T10:00:00Z</time></trkpt>
    <trkpt lat="48.1430" lon="11.5830"/>
  </trkseg></trk>
</gpx>"""
        records = fi.parse(gpx, "track.gpx").records
        self.assertEqual([(r.lat, r.lng) for r in records],
                         [(48.14, 11.58), (48.141, 11.581), (48.142, 11.582), (48.143, 11.583)])
        self.assertEqual(records[2].timestamp, 1714557600000)

    def test_kml_points_and_linestrings_only(self):
        kml = b"""<?xml version="1.0" encoding="UTF-8"?>
<kml xmlns="http://www.opengis.net/kml/2.2"><Document><Folder>
  <Placemark><name>A</name><Point><coordinates>11.58,48.14,0</coordinates></Point></Placemark>
  <Placemark><MultiGeometry>
    <LineString><coordinates>11.59,48.15 11.60,48.16,5</coordinates></LineString>
  </MultiGeometry></Placemark>
  <Placemark><Polygon><outerBoundaryIs><LinearRing>
    <coordinates>11.0,48.0 11.1,48.0 11.0,48.1 11.0,48.0</coordinates>
  </LinearRing></outerBoundaryIs></Polygon></Placemark>
</Folder></Document></kml>"""
        records = fi.parse(kml, "plan.kml").records
        self.assertEqual([(r.lat, r.lng) for r in records], [(48.14, 11.58), (48.15, 11.59), (48.16, 11.60)])

    def test_kml_gx_track_with_timestamps(self):
        kml = b"""<?xml version="1.0" encoding="UTF-8"?>
<kml xmlns="http://www.opengis.net/kml/2.2" xmlns:gx="http://www.google.com/kml/ext/2.2">
<Document><Placemark><gx:MultiTrack><gx:Track>
  <when>2024-05-01T10:00:00Z</when>
  <when>2024-05-01T10:00:05Z</when>
  <gx:coord>11.58 48.14 520</gx:coord>
  <gx:coord>11.581 48.141 521</gx:coord>
</gx:Track></gx:MultiTrack></Placemark></Document></kml>"""
        records = fi.parse(kml, "logger.kml").records
        self.assertEqual([(r.lat, r.lng) for r in records], [(48.14, 11.58), (48.141, 11.581)])
        self.assertEqual([r.timestamp for r in records], [1714557600000, 1714557605000])

    def test_malformed_xml(self):
        with self.assertRaises(IngestError):
            fi.parse(b"<gpx><trkpt", "broken.gpx")


class FormatDetectionTests(unittest.TestCase):
    def test_extension_selects_format(self):
        self.assertEqual(fi.detect_format("Aufmass.CSV"), "csv")
        self.assertEqual(fi.detect_format("track.gpx"), "gpx")
        self.assertEqual(fi.detect_format("x.json"), "geojson")

    def test_unsupported_extension(self):
        with self.assertRaises(IngestError):
            fi.parse(b"...", "drawing.dxf")


if __name__ == "__main__":
    unittest.main()
