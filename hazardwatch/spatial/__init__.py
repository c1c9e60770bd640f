"""Pure geospatial and severity classification."""
