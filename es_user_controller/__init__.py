"""Keeps Elasticsearch users and roles in sync with ElasticsearchUser resources"""
