# discovery/models.py
from django.db import models


class Grid(models.Model):
    """
    One discovery campaign over a named area.
    Holds the search queries and the aggregate counters of its leaf cells.
    """
    name = models.CharField(max_length=200)
    region = models.CharField(max_length=200, blank=True)
    province = models.CharField(max_length=200, blank=True)
    queries = models.JSONField(default=list)
    cell_size_km = models.FloatField(default=10)

    # Owned by discovery.lifecycle, only changed together with cell status
    searched_count = models.IntegerField(default=0)
    saturated_count = models.IntegerField(default=0)
    total_leaf_cells = models.IntegerField(default=0)
    total_leads_found = models.IntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)

    # Legacy: grids used to store their own bounds. Superseded by the
    # virtual grid; readable for old rows, never written.
    sw_lat = models.FloatField(null=True, blank=True)
    sw_lng = models.FloatField(null=True, blank=True)
    ne_lat = models.FloatField(null=True, blank=True)
    ne_lng = models.FloatField(null=True, blank=True)

    def __str__(self):
        return f"Grid({self.id}) {self.name}"

    def recount(self) -> dict:
        """Counters recomputed from scratch over the leaf cells."""
        leaves = self.cells.filter(is_leaf=True)
        return {
            'searched_count': leaves.filter(status=Cell.SEARCHED).count(),
            'saturated_count': leaves.filter(status=Cell.SATURATED).count(),
            'total_leaf_cells': leaves.count(),
            'total_leads_found': self.leads_found_total(),
        }

    def leads_found_total(self) -> int:
        return Lead.objects.filter(discovery_cell__grid=self).count()


class Cell(models.Model):
    """One rectangular tile of a Grid at a given subdivision depth."""
    UNSEARCHED = 'unsearched'
    SEARCHING = 'searching'
    SEARCHED = 'searched'
    SATURATED = 'saturated'
    STATUS = [
        (UNSEARCHED, 'Unsearched'),
        (SEARCHING, 'Searching'),
        (SEARCHED, 'Searched'),
        (SATURATED, 'Saturated'),
    ]

    grid = models.ForeignKey(
        Grid, on_delete=models.CASCADE, related_name='cells'
    )
    parent = models.ForeignKey(
        'self', on_delete=models.CASCADE, null=True, blank=True,
        related_name='children'
    )
    sw_lat = models.FloatField()
    sw_lng = models.FloatField()
    ne_lat = models.FloatField()
    ne_lng = models.FloatField()
    depth = models.IntegerField(default=0)
    is_leaf = models.BooleanField(default=True)
    status = models.CharField(
        max_length=20, choices=STATUS, default=UNSEARCHED
    )
    bounds_key = models.CharField(max_length=64)

    result_count = models.IntegerField(null=True, blank=True)
    query_saturation = models.JSONField(default=list, blank=True)
    last_searched_at = models.DateTimeField(null=True, blank=True)
    leads_found = models.IntegerField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['grid', 'depth', 'bounds_key'],
                name='unique_cell_bounds_per_depth',
            ),
        ]
        indexes = [
            models.Index(fields=['grid', 'is_leaf']),
        ]

    def __str__(self):
        return f"Cell({self.id}) {self.bounds_key} d={self.depth} — {self.status}"

    @property
    def bounds(self) -> dict:
        return {
            'sw_lat': self.sw_lat, 'sw_lng': self.sw_lng,
            'ne_lat': self.ne_lat, 'ne_lng': self.ne_lng,
        }


class Cluster(models.Model):
    """A named group of leads, drawn by a user or saved from DBSCAN."""
    name = models.CharField(max_length=200)
    boundary = models.JSONField(default=list)
    center_lat = models.FloatField(default=0)
    center_lng = models.FloatField(default=0)
    radius_km = models.FloatField(default=0)
    lead_count = models.IntegerField(default=0)
    is_auto_generated = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Cluster({self.id}) {self.name} — {self.lead_count} leads"


class Lead(models.Model):
    """One discovered business."""
    TYPES = [
        ('farm', 'Farm'),
        ('farmers_market', 'Farmers Market'),
        ('retail_store', 'Retail Store'),
        ('roadside_stand', 'Roadside Stand'),
        ('other', 'Other'),
    ]

    name = models.CharField(max_length=500)
    type = models.CharField(max_length=30, choices=TYPES, default='farm')
    address = models.CharField(max_length=500, blank=True)
    city = models.CharField(max_length=200, blank=True)
    region = models.CharField(max_length=200, blank=True)
    province = models.CharField(max_length=200, blank=True)
    postal_code = models.CharField(max_length=20, blank=True)
    country_code = models.CharField(max_length=5, blank=True)
    website = models.URLField(max_length=2000, blank=True)
    place_id = models.CharField(max_length=500, blank=True, db_index=True)
    latitude = models.FloatField(null=True, blank=True)
    longitude = models.FloatField(null=True, blank=True)
    source = models.CharField(max_length=50, blank=True)
    source_detail = models.CharField(max_length=500, blank=True)
    dedup_key = models.CharField(max_length=800, unique=True)

    cluster = models.ForeignKey(
        Cluster, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='leads'
    )
    discovery_cell = models.ForeignKey(
        Cell, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='leads'
    )
    enriched_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name
