"""Service layer.

Route handlers stay thin: they parse the request, call one function from this
package and shape the response. Each service function owns its transaction and
commits before returning.
"""
