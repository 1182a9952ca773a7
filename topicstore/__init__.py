"""Read-only access to the category/subcategory/topic document hierarchy."""
