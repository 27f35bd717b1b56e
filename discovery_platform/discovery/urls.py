# discovery/urls.py
from django.urls import path
from . import views

urlpatterns = [
    # Grids
    path('grids/', views.GridListView.as_view()),
    path('grids/global/', views.GlobalGridView.as_view()),
    path('grids/<int:grid_id>/', views.GridDetailView.as_view()),
    path('grids/<int:grid_id>/cells/', views.GridCellsView.as_view()),
    path('grids/<int:grid_id>/virtual-cells/', views.VirtualCellsView.as_view()),
    path('grids/<int:grid_id>/cells/activate/', views.ActivateCellView.as_view()),

    # Per-cell lifecycle
    path('cells/<int:cell_id>/', views.CellDetailView.as_view()),
    path('cells/<int:cell_id>/search/', views.CellSearchView.as_view()),
    path('cells/<int:cell_id>/subdivide/', views.CellSubdivideView.as_view()),
    path('cells/<int:cell_id>/undivide/', views.CellUndivideView.as_view()),

    path('discovery/purge/', views.PurgeView.as_view()),

    # Clusters
    path('clusters/', views.ClusterListView.as_view()),
    path('clusters/dbscan/', views.DbscanView.as_view()),
    path('clusters/preview/', views.ClusterPreviewView.as_view()),
    path('clusters/<int:cluster_id>/', views.ClusterDeleteView.as_view()),
]
